from hwpos import create_app

app = create_app()
