"""Math core for cascading scatter-pay slots: grid generation, evaluation, tumbles,
free-spin rounds and Monte-Carlo RTP verification."""

__version__ = "0.3.0"
