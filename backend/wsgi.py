# Overview: WSGI entry point for the checkout service (FLASK_APP=wsgi.py).

from checkout import create_app

app = create_app()
