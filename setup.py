from setuptools import find_packages, setup

setup(
    name='paintbridge',
    version='1.0.0',
    description='MQTT <-> Serial gateway daemon for the paint/motion controller',
    author='isantolin',
    author_email='',
    packages=find_packages(include=['paintbridge', 'paintbridge.*']),
    python_requires='>=3.11',
    install_requires=[
        'aiomqtt>=2.0',
        'paho-mqtt>=2.0',
        'msgspec',
        'tenacity',
        'transitions',
        'marshmallow>=3.13',
        'pyserial',
        'pyserial-asyncio-fast',
        'uvloop',
    ],
    extras_require={
        'test': [
            'pytest',
            'pytest-asyncio',
        ],
    },
    entry_points={
        'console_scripts': [
            'paintbridge=paintbridge.daemon:main',
        ],
    },
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: POSIX :: Linux',
    ],
)
