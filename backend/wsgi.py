# backend/wsgi.py
from posledger import create_app

app = create_app()
