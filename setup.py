# -*- coding: utf-8 -*-
"""vault-cloudauth a module for authenticating to HashiCorp Vault with cloud identities.

This module logs a process in to vault using a static token, approle, kubernetes, AWS,
GCP or Azure identity, keeps the token and leased secrets renewed in the background and
exposes transit encrypt/decrypt.

"""

import setuptools
import re
from io import open

VERSIONFILE="vault_cloudauth/_version.py"
verstrline = open(VERSIONFILE, "rt").read()
VSRE = r"^__version__ = ['\"]([^'\"]*)['\"]"
mo = re.search(VSRE, verstrline, re.M)
if mo:
    verstr = mo.group(1)
else:
    raise RuntimeError("Unable to find version string in %s." % (VERSIONFILE,))

with open("README.md", "r", encoding='utf-8') as fh:
    long_description = fh.read()

setuptools.setup(
    name='vault_cloudauth',
    version=verstr,
    author="Mike Moore",
    author_email="z_z_zebra@yahoo.com",
    description="Authenticate to HashiCorp Vault with cloud identities and keep tokens and leased secrets renewed",
    long_description_content_type="text/markdown",
    long_description=long_description,
    url="https://github.com/Mikemoore63/vault-cloudauth",
    packages=setuptools.find_packages(),
    include_package_data=True,
    license="MIT",
    scripts=[],
    python_requires=">=3.8",
    install_requires=[
        "hvac>=1.2,<3.0",
        "requests>=2.0,<3.0",
        "google-auth>=2.0,<3.0",
        "google-api-python-client>1.0,<3.0",
        "boto3>=1.20,<2.0",
        "botocore>=1.23,<2.0",
        "python-dateutil~=2.0",
    ],
    extras_require={
        "test": ["pytest"],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],

)
