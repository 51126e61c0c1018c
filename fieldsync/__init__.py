"""Field-service back end: QuickBooks Online customer and item synchronization"""

__version__ = "1.0.0"
