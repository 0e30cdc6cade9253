#!/usr/bin/env python
"""
sshbridge - asyncio bridge over blocking SSH sessions

Runs paramiko's blocking connect, authentication and channel calls on a
thread pool and hands their results back to the event loop as futures.
"""

import os
from setuptools import setup, find_packages

# Read the README for long description
here = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(here, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

# Version
VERSION = '0.1.0'

setup(
    name='sshbridge',
    version=VERSION,
    description='asyncio SSH sessions, channels and tunnels over paramiko',
    long_description=long_description,
    long_description_content_type='text/markdown',

    license='MIT',

    classifiers=[
        'Development Status :: 3 - Alpha',
        'Environment :: Console',
        'Framework :: AsyncIO',
        'Intended Audience :: Developers',
        'Intended Audience :: System Administrators',
        'License :: OSI Approved :: MIT License',
        'Operating System :: POSIX',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Topic :: System :: Networking',
        'Topic :: System :: Systems Administration',
    ],

    keywords='ssh asyncio paramiko tunnel port-forwarding agent',

    packages=find_packages(exclude=['tests', 'tests.*']),

    python_requires='>=3.10',

    install_requires=[
        'paramiko>=3.0',
        'PyYAML>=6.0',
    ],

    extras_require={
        'dev': [
            'pytest>=7.0',
            'pytest-asyncio>=0.23',
        ],
    },

    # Entry points for CLI commands
    entry_points={
        'console_scripts': [
            'sshbridge=sshbridge.cli.main:main',
        ],
    },
)
