# backend/wsgi.py
from lustre import create_app

app = create_app()
