# backend/wsgi.py
from partnerbooks import create_app

app = create_app()
