# backend/wsgi.py
from freshco import create_app

app = create_app()
