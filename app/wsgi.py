from app.ngoadmin import create_app

app = create_app()
