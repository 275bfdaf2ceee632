from license_portal.core.app_factory import create_app

app = create_app()
