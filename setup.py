from setuptools import find_packages, setup

setup(
    name="threadsense",
    version="0.1.0",
    description="Linked issue/PR context aggregation with reaction and edit weighted relevance scoring",
    packages=find_packages(include=["threadsense", "threadsense.*"]),
    include_package_data=True,
    python_requires=">=3.11",
    install_requires=[
        "pydantic>=2",
        "PyYAML>=6",
    ],
    extras_require={
        "test": ["pytest>=7"],
    },
    entry_points={
        "console_scripts": ["threadsense=threadsense.cli:main"],
    },
)
