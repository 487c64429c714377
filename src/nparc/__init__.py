from nparc import models, parsers, processing, utils, visualization

__version__ = "0.1.0"

__all__ = ["models", "parsers", "processing", "utils", "visualization", "__version__"]
