"""core/ -- Configuration and error taxonomy shared by auth/ and vault/.

Layer rule: core/ is the kernel. It imports only stdlib + third-party
libraries and never imports from auth/ or vault/.
"""
