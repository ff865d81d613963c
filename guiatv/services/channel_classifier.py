"""
Channel classification

Maps a channel display name onto its distribution tier using static
membership tables. Lookups are exact-name matches evaluated in priority
order: national free-to-air, premium, cable, regional.
"""
from guiatv.services.fetch_types import ChannelCategory, ChannelClassification

NATIONAL_FREE_TO_AIR: tuple[str, ...] = (
    "La 1",
    "La 2",
    "Antena 3",
    "Cuatro",
    "Telecinco",
    "La Sexta",
    "Mega",
    "Factoría de Ficción",
    "Neox",
    "Nova",
    "Boing",
    "Divinity",
    "Energy",
    "Paramount Network",
    "DMAX",
    "Disney Channel",
    "Ten",
    "Clan",
    "Teledeporte",
    "Be Mad",
    "TRECE",
    "DKISS",
    "Atreseries",
    "GOL PLAY",
)

PREMIUM_TIER: tuple[str, ...] = (
    "Movistar Plus+",
    "#0",
    "#Vamos",
    "Movistar Estrenos",
    "Movistar Acción",
    "Movistar Comedia",
    "Movistar Drama",
    "Movistar Clásicos",
    "Movistar Cine Español",
    "Movistar Documentales",
    "Movistar Series",
    "Movistar Series 2",
    "Movistar Deportes",
    "Movistar Deportes 2",
    "Movistar LaLiga",
    "Movistar Liga de Campeones",
    "Movistar Golf",
    "Movistar Vamos",
    "DAZN LaLiga",
    "DAZN F1",
)

CABLE_TIER: tuple[str, ...] = (
    "AXN",
    "AXN Movies",
    "AMC",
    "Calle 13",
    "Canal Hollywood",
    "Comedy Central",
    "Cosmopolitan",
    "Dark",
    "Sundance TV",
    "SyFy",
    "TNT",
    "Warner TV",
    "XTRM",
    "Somos",
    "Star Channel",
    "National Geographic",
    "Nat Geo Wild",
    "Discovery Channel",
    "Historia",
    "Odisea",
    "Canal Cocina",
    "Decasa",
    "Nickelodeon",
    "Nick Jr.",
    "Disney Junior",
    "Baby TV",
    "Eurosport 1",
    "Eurosport 2",
    "MTV",
    "Sol Música",
)

REGIONAL: tuple[tuple[str, str], ...] = (
    ("Canal Sur", "Andalucía"),
    ("Andalucía TV", "Andalucía"),
    ("Aragón TV", "Aragón"),
    ("TPA7", "Asturias"),
    ("IB3", "Illes Balears"),
    ("Televisión Canaria", "Canarias"),
    ("Popular TV Cantabria", "Cantabria"),
    ("CMM TV", "Castilla-La Mancha"),
    ("La 7", "Castilla y León"),
    ("La 8", "Castilla y León"),
    ("TV3", "Cataluña"),
    ("3/24", "Cataluña"),
    ("Super3/33", "Cataluña"),
    ("Esport3", "Cataluña"),
    ("À Punt", "Comunitat Valenciana"),
    ("Canal Extremadura", "Extremadura"),
    ("TVG", "Galicia"),
    ("TVG 2", "Galicia"),
    ("Telemadrid", "Madrid"),
    ("La Otra", "Madrid"),
    ("7 Región de Murcia", "Región de Murcia"),
    ("Navarra TV", "Navarra"),
    ("ETB 1", "País Vasco"),
    ("ETB 2", "País Vasco"),
    ("ETB 3", "País Vasco"),
    ("TVR", "La Rioja"),
)

_NATIONAL = frozenset(NATIONAL_FREE_TO_AIR)
_PREMIUM = frozenset(PREMIUM_TIER)
_CABLE = frozenset(CABLE_TIER)
_REGIONAL = dict(REGIONAL)


def classify(channel_name: str) -> ChannelClassification:
    """
    Classify a channel by its exact display name

    Returns:
        ChannelClassification; region is only set for Autonomic channels
    """
    if channel_name in _NATIONAL:
        return ChannelClassification(ChannelCategory.TDT)
    if channel_name in _PREMIUM:
        return ChannelClassification(ChannelCategory.MOVISTAR)
    if channel_name in _CABLE:
        return ChannelClassification(ChannelCategory.CABLE)
    region = _REGIONAL.get(channel_name)
    if region is not None:
        return ChannelClassification(ChannelCategory.AUTONOMIC, region)
    return ChannelClassification(ChannelCategory.UNKNOWN)


def is_curated(channel_name: str) -> bool:
    """True for channels that belong in the curated collection"""
    return classify(channel_name).category is not ChannelCategory.UNKNOWN
