"""VM 라이프사이클 컨트롤 플레인 (Compute Service)."""

__version__ = "0.1.0"
