from setuptools import setup, find_packages

setup(
    name="changelens",
    version="0.3.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "setuptools>=58.0.0",
        "python-dotenv>=0.19.0",
        "PyYAML>=6.0",
        "pathspec>=0.12.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        'console_scripts': [
            'changelens=changelens.cli:main',
        ],
    },
    author="zero0043",
    description="Structured git changesets with a content-addressed result cache",
    long_description=open("README.md", encoding="utf-8").read(),
    long_description_content_type="text/markdown",
    python_requires=">=3.8",
)
