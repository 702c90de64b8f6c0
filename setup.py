from setuptools import setup


setup(
    name="order-sheet",
    version="0.1.0",
    description="Convert messy CSV and Excel order files into template-shaped purchase order workbooks",
    packages=["order_sheet"],
    python_requires=">=3.9",
    install_requires=[
        "pandas>=2.1",
        "chardet",
        "openpyxl>=3.1",
        "xlrd>=2.0",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "order-sheet=order_sheet.cli:main",
        ]
    },
)
