from .hub import TableChannelHub

__all__ = ["TableChannelHub"]
