from setuptools import setup

setup(
    name="hudapp",
    version="1.0",
    py_modules=[
        "main",
        "gpu_parser",
        "command_runner",
        "system_indexer",
        "toolchain_indexer",
        "server",
    ],
    python_requires=">=3.9",
    install_requires=[
        "fastapi",
        "uvicorn",
        "requests",
        "rich",
    ],
    extras_require={
        "test": ["pytest", "httpx"],
    },
    entry_points={
        "console_scripts": [
            "hudapp=main:main",
        ],
    },
)
