"""Fixed list of photo categories every installation job must document."""
from dataclasses import dataclass
from typing import Literal

TemplateType = Literal["photo", "photo+sn", "photo+cable"]


@dataclass(frozen=True)
class CategoryTemplate:
    id: str
    name: str
    type: TemplateType
    sort: int

    @property
    def requires_serial_number(self) -> bool:
        return self.type == "photo+sn"

    @property
    def requires_cable(self) -> bool:
        return self.type == "photo+cable"


PHOTO_TEMPLATE: list[CategoryTemplate] = [
    CategoryTemplate("1", "Site Overview Before", "photo", 1),
    CategoryTemplate("2", "IP Camera 1", "photo+sn", 2),
    CategoryTemplate("3", "IP Camera 2", "photo+sn", 3),
    CategoryTemplate("4", "IP Camera 3", "photo+sn", 4),
    CategoryTemplate("5", "IP Camera 4", "photo+sn", 5),
    CategoryTemplate("6", "NVR", "photo+sn", 6),
    CategoryTemplate("7", "Hard Disk", "photo+sn", 7),
    CategoryTemplate("8", "PoE Switch", "photo+sn", 8),
    CategoryTemplate("9", "Router", "photo+sn", 9),
    CategoryTemplate("10", "Monitor", "photo+sn", 10),
    CategoryTemplate("11", "Cable Cam 1 Before", "photo+cable", 11),
    CategoryTemplate("12", "Cable Cam 1 After", "photo+cable", 12),
    CategoryTemplate("13", "Cable Cam 2 Before", "photo+cable", 13),
    CategoryTemplate("14", "Cable Cam 2 After", "photo+cable", 14),
    CategoryTemplate("15", "Outdoor Panel Box", "photo", 15),
    CategoryTemplate("16", "Power Outlet", "photo", 16),
    CategoryTemplate("17", "Monitor View", "photo", 17),
    CategoryTemplate("18", "Site Overview After", "photo", 18),
]


def ordered_template() -> list[CategoryTemplate]:
    return sorted(PHOTO_TEMPLATE, key=lambda t: t.sort)


def get_category(category_id: str) -> CategoryTemplate | None:
    for tpl in PHOTO_TEMPLATE:
        if tpl.id == str(category_id):
            return tpl
    return None
