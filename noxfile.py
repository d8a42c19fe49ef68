# noxfile.py
import nox

DEPS = ("numpy", "scipy", "soundfile", "sounddevice", "cryptography")


@nox.session
def tests(session):
    session.install("pytest", *DEPS)
    session.install("-e", ".", "--no-deps")
    session.run("pytest")


@nox.session
def lint(session):
    session.install("black", "flake8", "mypy", *DEPS)
    session.run("black", "--check", "pcmguard", "tests", "tx_app.py", "rx_app.py")
    session.run("flake8", "pcmguard", "tests")
    session.run("mypy", "pcmguard")


@nox.session
def format(session):
    session.install("black")
    session.run("black", "pcmguard", "tests", "tx_app.py", "rx_app.py")
