from setuptools import setup, find_packages

setup(
    name="admitgate",
    version="0.1.0",
    packages=find_packages(include=["admitgate", "admitgate.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi",
        "starlette",
        "pydantic>=2",
        "pydantic-settings>=2.7",
        "redis>=5.0.1",
        "python-multipart",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "httpx",
        ],
    },
)
