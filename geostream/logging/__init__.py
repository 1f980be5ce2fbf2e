from geostream.logging._geostream_logger import GEOSTREAM_LOGGER, ColoredFormatter

__all__ = ["GEOSTREAM_LOGGER", "ColoredFormatter"]
