#!/usr/bin/env python

from setuptools import setup

setup(
    name="storagefs",
    version="0.3.0",
    description="Filesystem operations on S3-compatible object stores and local directories",
    packages=["storagefs", "storagefs.drivers"],
    include_package_data=True,
    zip_safe=False,
    python_requires=">=3.11",
    keywords=["S3", "storage", "filesystem"],
    classifiers=[
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Topic :: System :: Filesystems",
    ],
    install_requires=[
        "aiobotocore",
        "types-aiobotocore-s3",
        "async-lru",
        "class-doc",
        "python-dotenv",
        "pydantic>=2",
        "pydantic-settings",
        "python-magic",
    ],
    extras_require={
        'dev': [
            'pytest',
            'anyio',
            'httpx',
            'mypy',
            'flake8',
            'pre-commit',
        ]
    },
    entry_points={
        'console_scripts': [
            'storagefs = storagefs.__main__:main'
        ]
    },
)
