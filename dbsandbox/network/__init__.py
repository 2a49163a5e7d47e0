from .network_manager import Network, NetworkManager

__all__ = ['Network', 'NetworkManager']
