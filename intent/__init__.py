"""
intent — Natural-language command to structured Intent parsing.

A loose phrase normaliser rewrites free text into the strict
``<op> <param> <value> <relative|absolute>`` grammar, which the strict
parser turns into Intent records. Both share one verb vocabulary.
"""
