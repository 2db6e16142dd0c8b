#!/usr/bin/env python
from setuptools import setup, find_packages

with open("README.md", "r") as fh:
    long_description = fh.read()

setup(
    name='django-ldapion',
    version='1.0.0',
    description='Convert LDIF to Ion documents and back, and apply LDIF files to a directory server',
    long_description=long_description,
    long_description_content_type="text/markdown",
    keywords=['django', 'ldap', 'ldif', 'ion'],
    author="Caltech IMSS ADS",
    author_email="imss-ads-staff@caltech.edu",
    packages=find_packages(exclude=['bin']),
    include_package_data=True,
    install_requires=[
        'amazon.ion',
        'django',
        'ldap_filter',
        'python-ldap',
    ],
    extras_require={
        'test': [
            'pytest',
            'python-ldap-faker',
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3"
    ],
)
