"""SOCI Index Builder: event-driven SOCI index generation for Amazon ECR.

Given an ECR "Image Action" push event, builds a Seekable OCI (SOCI) index
for the pushed image and publishes it back to the same repository:
  - V1: a single-platform SOCI index manifest referring to the image
  - V2: a converted multi-platform OCI image index, tagged ``<tag>-soci``

Each invocation is stateless, runs under a hard deadline, and owns an
ephemeral workspace that is removed on every exit path.
"""

__version__ = "0.2.0"
__description__ = "Builds and publishes SOCI indices for images pushed to Amazon ECR"

from soci_index_builder.core.pipeline import InvocationPipeline
from soci_index_builder.handler import lambda_handler

__all__ = ["InvocationPipeline", "lambda_handler", "__version__"]
