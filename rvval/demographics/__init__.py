"""County FIPS resolution and area-metrics sources"""
