from lineu_core.config.routing import RoutingFile, load_routing_file
from lineu_core.config.settings import Settings

__all__ = ["RoutingFile", "Settings", "load_routing_file"]
