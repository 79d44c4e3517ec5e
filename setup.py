from setuptools import setup, find_packages

setup(
    name="able-account",
    version="0.1.0",
    packages=find_packages(include=["able_account", "able_account.*"]),
    py_modules=["able_account_cli"],
    include_package_data=True,
    install_requires=[
        "cryptography>=42.0.5",
        "argon2-cffi>=23.1.0",
        "rich>=13.7.0",
        "python-dotenv>=1.0.1",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "able-account=able_account_cli:main",
        ],
    },
    python_requires=">=3.11",
)
