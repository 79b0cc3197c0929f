# backend/wsgi.py
from scoopdesk import create_app

app = create_app()
