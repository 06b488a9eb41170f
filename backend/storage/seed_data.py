# storage/seed_data.py
# Launch catalog of the storefront. Written by seed_catalog.py only when the
# catalog key does not exist yet.

from schemas.catalog import Product

DEFAULT_PRODUCTS = [
    Product(
        id="formacion-inicial-tsf",
        name="Formación Inicial TSF",
        type="course",
        short_description="Curso base de trading para dar tus primeros pasos con el sistema TSF.",
        price_cents=4900,
        image_url="https://rodripereztsf.github.io/IMG/formacion-inicial.jpg",
        delivery_type="drive_link",
        delivery_value="https://drive.google.com/XXXXX",
    ),
    Product(
        id="formacion-avanzada-liquidez",
        name="Formación Avanzada – Liquidez y Scalping",
        type="course",
        short_description="Entrenamiento intensivo en liquidez institucional y scalping en XAUUSD.",
        price_cents=19900,
        image_url="https://rodripereztsf.github.io/IMG/formacion-avanzada.jpg",
        delivery_type="drive_link",
        delivery_value="https://drive.google.com/YYYYY",
    ),
    Product(
        id="indicador-liquidez-tsf",
        name="Indicador TSF Liquidez MTF",
        type="indicator",
        short_description="Indicador avanzado de liquidez multi–timeframe para TradingView.",
        price_cents=9900,
        image_url="https://rodripereztsf.github.io/IMG/indicador-liquidez.jpg",
        delivery_type="instruction_page",
        delivery_value="/acceso/indicador-liquidez-tsf",
    ),
    Product(
        id="bot-scalping-xauusd",
        name="Bot de Scalping XAUUSD",
        type="bot",
        short_description="Robot de trading optimizado para XAUUSD en sesiones de Londres y NY.",
        price_cents=24900,
        image_url="https://rodripereztsf.github.io/IMG/bot-scalping.jpg",
        delivery_type="instruction_page",
        delivery_value="/acceso/bot-scalping-xauusd",
    ),
    Product(
        id="remera-oficial-tsf",
        name="Remera Oficial TRADING SIN FRONTERAS",
        type="physical",
        short_description="Remera negra edición limitada TSF para traders sin fronteras.",
        price_cents=6900,
        image_url="https://rodripereztsf.github.io/IMG/remera-oficial.jpg",
        delivery_type="none",
        delivery_value="",
    ),
]
