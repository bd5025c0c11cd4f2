# Overview: WSGI entrypoint for the Kassa server (FLASK_APP=wsgi.py).

from kassa import create_app

app = create_app()

if __name__ == "__main__":
    app.run(debug=True)
