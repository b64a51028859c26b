"""Package configuration."""
import re

from setuptools import setup, find_packages

CLASSIFIERS = [
    'Intended Audience :: Developers',
    'Natural Language :: English',
    'Programming Language :: Python',
    'Programming Language :: Python :: 3',
    'License :: OSI Approved :: GNU General Public License v3 or later (GPLv3+)',
    'Topic :: System :: Hardware :: Universal Serial Bus (USB)',
    'Topic :: Software Development :: Libraries :: Python Modules'
]

KEYWORDS = 'usb, libusb, dfu, dfu-util, adb, fastboot, mtp, device detection'

with open('pybootforge/__init__.py', 'r') as fp:
    init_source = fp.read()

version = re.search(r"^__version__ = ['\"]([^'\"]+)['\"]", init_source, re.M).group(1)
author = re.search(r"^__author__ = ['\"]([^'\"]+)['\"]", init_source, re.M).group(1)

with open('requirements.txt', 'r') as fp:
    install_requires = [line.strip() for line in fp if line.strip()]

with open('requirements-dev.txt', 'r') as fp:
    dev_requires = [line.strip() for line in fp if line.strip()]

with open('README.md', 'r') as fp:
    long_description = fp.read()

setup(
    name='pybootforge',
    version=version,
    python_requires='>=3.9',

    description='USB device detection, classification and DFU firmware transfer',
    long_description=long_description,
    long_description_content_type="text/markdown",

    author=author,
    url='https://github.com/o-murphy/pybootforge',
    download_url='https://github.com/o-murphy/pybootforge',

    classifiers=CLASSIFIERS,
    keywords=KEYWORDS,

    packages=find_packages(exclude=('tests',)),
    install_requires=install_requires,

    extras_require={
        "dev": dev_requires,
    },

    entry_points={
        'console_scripts': [
            'pybootforge=pybootforge.__main__:main',
        ],
    },

    zip_safe=False,
)
