from setuptools import setup


setup(
    name="sheet-validator",
    version="0.1.0",
    description="Spreadsheet data-quality checks against reusable data dictionaries",
    packages=["sheet_validator"],
    install_requires=[
        "pandas",
        "chardet",
        "openpyxl",
        "streamlit",
        "requests",
    ],
    extras_require={
        "excel-legacy": ["xlrd"],
        "ods": ["odfpy"],
        "all": ["xlrd", "odfpy"],
    },
    entry_points={
        "console_scripts": [
            "sheet-validator=sheet_validator.cli:main",
        ]
    },
)
