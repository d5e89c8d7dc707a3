from contextlib import contextmanager

from flask import Flask, has_app_context


@contextmanager
def db_context(app: Flask):
    """Run a series of DB operations inside `app`'s application context."""
    if has_app_context():
        yield
        return
    with app.app_context():
        yield
