from clinic_desk.app_factory import create_app


if __name__ == "__main__":
    """
    Entrypoint for the on-device record engine and its local JSON API.
    Bound to localhost only: there is no authentication.
    """
    app = create_app()
    app.run(host="127.0.0.1", port=5001, debug=app.config.get("DEBUG", False))
