from setuptools import setup, find_packages

with open('README.md', 'r') as readme:
    long_description = readme.read()

setup(
    name='multispline', 
    version='1.0.0', 
    description='Tensor product B-splines interpolating multivariate gridded samples.', 
    long_description=long_description, 
    long_description_content_type='text/markdown', 
    packages=find_packages(include=['multispline', 'multispline.*']), 
    install_requires=['numpy', 'numba', 'scipy', 'matplotlib', 'meshio', 'tqdm'], 
    extras_require={'test': ['pytest']}, 
    classifiers=['Programming Language :: Python :: 3', 
                 'Operating System :: OS Independent'], 
    
)
