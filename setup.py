from setuptools import setup, find_packages
setup(
    name="listing_search",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages("src"),
    include_package_data=True,
    python_requires=">=3.10",
    install_requires=[
        "fastapi",
        "pydantic>=2",
        "shapely>=2",
        "httpx",
    ],
    extras_require={
        "test": ["pytest", "httpx"],
    },
    entry_points={
        'console_scripts': [
            'listing_search=listing_search.__main__:main'
        ]
    }
)
