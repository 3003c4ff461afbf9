# module schoolpay.app
from schoolpay.app_setup.factory import create_app

# App globale
app = create_app()
