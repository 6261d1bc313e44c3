"""
Client-side pass: wrap and annotate content in an already rendered page.
"""
