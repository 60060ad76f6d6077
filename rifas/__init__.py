"""Motor de rifas: inventario virtual de boletos, reservas, pagos y sorteos."""

__version__ = "4.0.0"
