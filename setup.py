"""Install the facility reservation auth package."""

from setuptools import setup, find_packages

setup(
    name='facility-reservation',
    version='0.1.0',
    packages=find_packages(exclude=['*tests*']),
    package_data={'facility_reservation': ['config.py']},
    python_requires='>=3.8',
    install_requires=[
        "click",
        "flask",
        "psycopg2-binary",
        "pytz",
        "retry",
        "sqlalchemy>=1.4",
        "ulid-py",
        "werkzeug",
    ],
    extras_require={
        'test': [
            "mimesis",
            "pytest",
        ]
    },
    entry_points={
        'console_scripts': [
            'facility-reservation=facility_reservation.cli:cli',
        ]
    },
    zip_safe=False
)
