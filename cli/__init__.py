"""``kioskctl``: command-line access to the kiosk telemetry service.

The Typer application is ``cli.app.app``.
"""
