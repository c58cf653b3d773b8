from setuptools import setup, find_namespace_packages

setup(
    name="composetest",
    version="0.1.0",
    description="Docker Compose stack lifecycle for test runs",
    packages=find_namespace_packages(where="src", include=["composetest", "composetest.*"]),
    package_dir={"": "src"},
    python_requires=">=3.8",
    install_requires=[
        "pydantic>=2.0",
        "pyyaml>=6.0",
        "click>=8.0",
        "psutil>=5.9",
        "tenacity>=8.0",
        "python-dotenv>=1.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
        "dev": ["pytest>=7.0", "black>=23.0"],
    },
    entry_points={
        "console_scripts": [
            "composetest=composetest.CLI.main:main",
        ],
    },
)
