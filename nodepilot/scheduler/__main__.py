from .scheduler import run

run()
