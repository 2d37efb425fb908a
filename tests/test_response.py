from fieldphoto.utils.response import ok_response, error_response


def test_ok_response_empty():
    assert ok_response() == {"ok": True}


def test_ok_response_with_data():
    result = ok_response(entryId="e-1", categoryId="2")
    assert result == {"ok": True, "entryId": "e-1", "categoryId": "2"}


def test_error_response():
    assert error_response("jobId required") == {"error": "jobId required"}


def test_error_response_with_data():
    result = error_response("Unsupported Content-Type", peek="abc")
    assert result == {"error": "Unsupported Content-Type", "peek": "abc"}
