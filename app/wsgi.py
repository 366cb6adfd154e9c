from app.climbclub import create_app

app = create_app()
