from setuptools import setup, find_packages

setup(
    name="farm_assistant",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={"farm_assistant": ["services/*.yaml"]},
    install_requires=[
        "fastapi",
        "uvicorn",
        "pydantic>=2",
        "sqlalchemy[asyncio]>=2",
        "asyncpg",
        "python-jose[cryptography]",
        "python-multipart",
        "httpx",
        "openai",
        "anthropic",
        "mistralai>=1,<2",
        "pyyaml",
        "python-dotenv"
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "aiosqlite"
        ]
    },
)
