from sareeflow import create_app

app = create_app()
