import os
import sys

try:
    from setuptools import setup
except ImportError:
    from distutils.core import setup

# Don't import posthog_lite module here, since deps may not be installed
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "posthog_lite"))
from version import VERSION  # noqa: E402

long_description = """
posthog-lite is a small synchronous PostHog client: event capture and
remotely evaluated feature flags, without background queues.

This package requires Python 3.9 or higher.
"""

install_requires = [
    "requests>=2.7,<3.0",
    "backoff>=1.10.0",
    "python-dateutil>=2.2",
    "typing_extensions>=4.2.0",
]

tests_require = [
    "mock>=2.0.0",
    "pytest",
    "parameterized>=0.8.1",
]

setup(
    name="posthog-lite",
    version=VERSION,
    url="https://github.com/posthog/posthog-python",
    author="Posthog",
    author_email="hey@posthog.com",
    maintainer="PostHog",
    maintainer_email="hey@posthog.com",
    license="MIT License",
    description="Capture events and evaluate PostHog feature flags from python.",
    long_description=long_description,
    packages=["posthog_lite", "posthog_lite.test"],
    python_requires=">=3.9",
    install_requires=install_requires,
    extras_require={"test": tests_require},
    classifiers=[
        "Development Status :: 5 - Production/Stable",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
