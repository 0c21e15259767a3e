# backend/wsgi.py
from partsledger import create_app

app = create_app()
