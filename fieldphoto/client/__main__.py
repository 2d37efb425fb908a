from fieldphoto.client.agent import cli

if __name__ == "__main__":
    cli()
